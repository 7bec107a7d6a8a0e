"""Storage adapters. Each store has a Supabase and an in-memory implementation."""
