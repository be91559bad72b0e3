from __future__ import annotations

import logging
from collections import OrderedDict

from feed_relay import logging_conf


def _handlers(link: str) -> list[logging.Handler]:
    name = f"feed_relay.link.{logging_conf._slug(link)}"
    return [h for h in logging.getLogger(name).handlers if isinstance(h, logging.FileHandler)]


def test_link_logger_closes_least_recently_used_handler(monkeypatch) -> None:
    calls: list[bool] = []
    monkeypatch.setattr(logging_conf, "_LOGGING_INITIALISED", True)
    monkeypatch.setattr(logging_conf, "configure_logging", lambda verbose=False: calls.append(verbose))
    monkeypatch.setattr(logging_conf, "MAX_LINK_HANDLERS", 2)
    monkeypatch.setattr(logging_conf, "_LINK_HANDLERS", OrderedDict())
    first, second, third = (f"https://example.com/{name}.xml" for name in ("a", "b", "c"))

    logging_conf.link_logger(first)
    [first_handler] = _handlers(first)
    logging.getLogger(f"feed_relay.link.{logging_conf._slug(first)}").warning("opened")
    assert first_handler.stream is not None
    logging_conf.link_logger(second)
    logging_conf.link_logger(second)
    logging_conf.link_logger(third)

    assert _handlers(first) == []
    assert first_handler.stream is None
    assert len(_handlers(second)) == 1
    assert len(_handlers(third)) == 1
    assert list(logging_conf._LINK_HANDLERS.values()) == _handlers(second) + _handlers(third)
    assert calls == []

    for name, handler in list(logging_conf._LINK_HANDLERS.items()):
        logging_conf._drop_link_handler(name, handler)
