"""ARM image builder (chroot + user-mode emulation).

Core design goals:
- Ordered, single-threaded pipeline of steps over a typed context
- Every host resource released in reverse order on every exit path
- Cooperative cancellation at external-command boundaries
- Centralized logging
"""

__all__ = []
