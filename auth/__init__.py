"""auth/ -- Identity core: accounts, one-time passcodes, password hashing, tokens.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/ for
configuration in IdentityService.from_settings(). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
