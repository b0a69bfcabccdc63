"""Origo tenancy core: tenant resolution, authorization, plan quotas and custom domains."""
