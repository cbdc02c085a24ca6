"""Read-only lookups."""

from __future__ import annotations

import logging
from typing import Any

from . import jsonpath
from .body import filter_attrs
from .cancel import CancelToken
from .client import Client, Options
from .errors import HTTPError, RestrikError
from .locks import LockRegistry
from .models import DataSourceConfig
from .precheck import prechecked

logger = logging.getLogger(__name__)


class DataSource:
    def __init__(self, client: Client, *, locks: LockRegistry | None = None) -> None:
        self.client = client
        self.locks = locks or LockRegistry()

    def read(self, config: DataSourceConfig, cancel: CancelToken | None = None) -> Any:
        """Fetch ``config.path`` and return the (selected, filtered) document.

        With ``allow_not_exist`` a 404 or an unmatched selector yields None
        instead of raising.
        """
        cancel = cancel or CancelToken()
        options = Options(method=config.method, query=dict(config.query), header=dict(config.header))
        with prechecked(
            self.client,
            config.precheck,
            locks=self.locks,
            path=config.path,
            header=options.header,
            query=options.query,
            cancel=cancel,
        ):
            resp = self.client.read_collection(config.path, options, body=config.body, cancel=cancel)

        if not resp.is_success:
            if resp.status_code == 404 and config.allow_not_exist:
                logger.info("Data source %s does not exist", config.path)
                return None
            raise HTTPError(f"read {config.path} failed", status_code=resp.status_code, body=resp.body)

        doc = resp.json()
        if config.selector:
            doc, found = jsonpath.get(doc, config.selector)
            if not found:
                if config.allow_not_exist:
                    logger.info("Data source %s: selector matched nothing", config.path)
                    return None
                raise RestrikError(f"selector {config.selector!r} matched nothing at {config.path}")
        if config.output_attrs:
            doc = filter_attrs(doc, config.output_attrs)
        return doc
