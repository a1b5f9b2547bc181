from docpipe.auth.tenant import CurrentTenant, TenantContext, get_tenant

__all__ = ["CurrentTenant", "TenantContext", "get_tenant"]
