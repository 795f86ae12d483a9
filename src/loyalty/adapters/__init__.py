"""Adapters - Infrastructure implementations of core interfaces.

This package contains all the concrete implementations of the
Protocol interfaces defined in the core module.

Adapters are organized by type:
- auth/: AuthRepository stores (PostgreSQL, in-memory)
- db/: asyncpg connection pool
- notifications/: Email senders (SMTP, console)
- sso/: Social login providers (Google, Apple)
"""
