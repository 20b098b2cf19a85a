"""Authentication.

Learn: Users register with email/password and receive JWT access/refresh
tokens. The bearer token resolves to a CurrentIdentity for the pixel and
user routes. The socket endpoint reuses the same tokens when
PIXELMAP_SOCKET_REQUIRE_AUTH is on.
"""
