"""
Remote store access layer.

Responsibilities:
- Build the Supabase client from environment configuration.
- Run every store round trip under a hard deadline.
- Hand a single long-lived store handle to request handlers.
"""
