"""
GITOPS RBAC - HTTP API

Usage:
    from gitops_rbac.api.main import create_app

    app = create_app()
"""
