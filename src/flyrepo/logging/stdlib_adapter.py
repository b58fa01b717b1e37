# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""StdlibLoggingAdapter: LoggingPort backed only by the standard library."""

from __future__ import annotations

import logging
import sys
from typing import Any

from flyrepo.core.config import Config


class _StructuredLogger:
    """Accepts structlog-style calls (``logger.info(event, **kwargs)``) on a stdlib Logger."""

    __slots__ = ("_logger",)

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @staticmethod
    def _format(event: str, kwargs: dict[str, Any]) -> str:
        if not kwargs:
            return event
        return f"{event} | " + " ".join(f"{k}={v}" for k, v in kwargs.items())

    def debug(self, event: str, **kwargs: Any) -> None:
        self._logger.debug(self._format(event, kwargs))

    def info(self, event: str, **kwargs: Any) -> None:
        self._logger.info(self._format(event, kwargs))

    def warning(self, event: str, **kwargs: Any) -> None:
        self._logger.warning(self._format(event, kwargs))

    def error(self, event: str, **kwargs: Any) -> None:
        self._logger.error(self._format(event, kwargs))

    def exception(self, event: str, **kwargs: Any) -> None:
        self._logger.exception(self._format(event, kwargs))


class StdlibLoggingAdapter:
    """Plain ``logging`` output (``event | key=value``), selected with
    ``flyrepo.logging.adapter: stdlib``."""

    def __init__(self) -> None:
        self._root_level: str = "INFO"
        self._format: str = "console"

    def configure(self, config: Config) -> None:
        level_section = config.get_section("flyrepo.logging.level")
        self._root_level = str(level_section.pop("root", "INFO")).upper()
        self._format = str(config.get("flyrepo.logging.format", "console")).lower()

        if self._format == "json":
            fmt = '{"timestamp":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
        else:
            fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        logging.basicConfig(
            format=fmt,
            stream=sys.stdout,
            level=getattr(logging, self._root_level, logging.INFO),
            force=True,
        )
        for module, level in level_section.items():
            self.set_level(module, str(level))

    def get_logger(self, name: str) -> Any:
        return _StructuredLogger(logging.getLogger(name))

    def set_level(self, name: str, level: str) -> None:
        logging.getLogger(name).setLevel(getattr(logging, level.upper(), logging.INFO))
