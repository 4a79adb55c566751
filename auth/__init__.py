"""auth/ -- Identity core: accounts, sessions, one-time tokens and their orchestration.

Layer rule: auth/ may import core/ (settings, clock) and notify/ (message
delivery). It does NOT import from api/.
api/ and main.py import from auth/, not the other way around.
"""
