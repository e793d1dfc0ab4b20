"""
GITOPS RBAC API Test Suite

Test Files:
- conftest.py: Shared fixtures (audit database, access core, tokens)
- test_api_access.py: Authorization, policy and audit endpoints
- test_failure_modes.py: Audit outages and bad credentials

Run Commands:
    pytest gitops_rbac/api/tests -v
"""
