"""sessions/ -- Session key storage and the controller transport layers call.

Layer rule: sessions/ imports from core/ only. It does NOT import from auth/.
"""
