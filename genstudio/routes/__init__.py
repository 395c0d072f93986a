"""
Routes package for the genstudio backend.
Contains Flask Blueprints, all registered under /api.
"""

__all__ = [
    "register_blueprints",
]


def _print_route_map(app):
    """Print all registered /api/* routes at startup for debugging."""
    api_routes = []
    for rule in app.url_map.iter_rules():
        if rule.rule.startswith("/api"):
            methods = ",".join(sorted(m for m in rule.methods if m not in ("HEAD", "OPTIONS")))
            api_routes.append(f"  {methods:8s} {rule.rule}")

    api_routes.sort(key=lambda x: x.split()[-1])  # Sort by path

    print("[ROUTES] Registered API endpoints:")
    for route in api_routes:
        print(route)
    print(f"[ROUTES] Total: {len(api_routes)} endpoints")


def register_blueprints(app, print_routes: bool = False):
    """Register all blueprints with the Flask app."""
    from genstudio.routes.generations import bp as generations_bp
    from genstudio.routes.health import bp as health_bp
    from genstudio.routes.models import bp as models_bp
    from genstudio.routes.webhooks import bp as webhooks_bp

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(models_bp, url_prefix="/api")
    app.register_blueprint(generations_bp, url_prefix="/api")
    app.register_blueprint(webhooks_bp, url_prefix="/api")

    if print_routes:
        _print_route_map(app)
