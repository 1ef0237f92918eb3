"""Callback acquisition strategies.

Two interchangeable ways of obtaining the provider's authorization redirect:

- :class:`LoopbackAcquirer` -- binds a one-shot HTTP listener on
  ``127.0.0.1``, opens the system browser, and captures the redirect.
- :class:`ManualAcquirer` -- prints the authorization URL and reads the
  redirected URL pasted back by the user.

Both return the same :class:`~codegrant.models.CallbackResult` shape and are
selected once per attempt by :class:`~codegrant.flow.AuthorizationFlow`.
"""

from codegrant.callback.base import CallbackAcquirer, Deadline
from codegrant.callback.loopback import LoopbackAcquirer, open_system_browser
from codegrant.callback.manual import ManualAcquirer

__all__ = [
    "CallbackAcquirer",
    "Deadline",
    "LoopbackAcquirer",
    "ManualAcquirer",
    "open_system_browser",
]
