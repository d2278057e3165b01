"""
Data-access and authentication layer for the rental management app.

Services take their backend clients (auth, rows, object storage) as
constructor arguments so production and in-memory backends are
interchangeable.
"""
