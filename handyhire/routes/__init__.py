"""Routes package for the escrow backend."""


def register_routes(app):
    """Register all route blueprints with the application."""
    from .jobs import jobs_bp
    from .payments import payments_bp
    from .users import users_bp
    from .admin import admin_bp
    
    app.register_blueprint(jobs_bp, url_prefix='/api/jobs')
    app.register_blueprint(payments_bp, url_prefix='/api/payments')
    app.register_blueprint(users_bp, url_prefix='/api/users')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
