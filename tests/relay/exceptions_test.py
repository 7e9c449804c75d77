from __future__ import annotations

from peermatch.relay.exceptions import RelayClientError
from peermatch.relay.exceptions import RelayNotConnectedError
from peermatch.relay.exceptions import RelayRegistrationError


def test_exception_hierarchy() -> None:
    assert issubclass(RelayNotConnectedError, RelayClientError)
    assert issubclass(RelayRegistrationError, RelayClientError)
