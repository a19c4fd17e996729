"""
Logging configuration for the permission inheritance engine.

This module provides centralized logging configuration with support for
structured logging, different log levels, and multiple output formats.
"""

import logging
import logging.config
import sys
from typing import Dict, Any, Optional


def get_logging_config(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    enable_access_log: bool = True
) -> Dict[str, Any]:
    """
    Get logging configuration dictionary.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'text')
        log_file: Optional log file path
        enable_access_log: Whether to enable HTTP access logging

    Returns:
        Logging configuration dictionary
    """
    formatters = {
        "default": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "detailed": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(name)s %(levelname)s %(module)s %(lineno)d %(message)s"
        }
    }

    formatter_name = "json" if log_format == "json" else "detailed"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter_name,
            "stream": sys.stdout
        }
    }

    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": formatter_name,
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8"
        }

    handler_names = list(handlers.keys())
    loggers = {
        "": {  # Root logger
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "uvicorn": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "uvicorn.error": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "fastapi": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "rbac_hierarchy": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        }
    }

    if enable_access_log:
        loggers["uvicorn.access"] = {
            "level": "INFO",
            "handlers": handler_names,
            "propagate": False
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "loggers": loggers
    }


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None,
    enable_access_log: bool = True
) -> None:
    """
    Setup logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'text')
        log_file: Optional log file path
        enable_access_log: Whether to enable HTTP access logging
    """
    config = get_logging_config(
        log_level=log_level,
        log_format=log_format,
        log_file=log_file,
        enable_access_log=enable_access_log
    )

    logging.config.dictConfig(config)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


class StructuredLogger:
    """
    Structured logger for consistent log message formatting.

    This class provides methods for logging structured data with
    consistent field names and formats.
    """

    def __init__(self, name: str):
        """Initialize structured logger.

        Args:
            name: Logger name
        """
        self.logger = get_logger(name)

    def log_request(
        self,
        method: str,
        path: str,
        status_code: int,
        response_time: float,
        client_ip: Optional[str] = None,
        **kwargs
    ):
        """Log HTTP request information.

        Args:
            method: HTTP method
            path: Request path
            status_code: Response status code
            response_time: Response time in milliseconds
            client_ip: Client IP address
            **kwargs: Additional fields to log
        """
        log_data = {
            "event": "http_request",
            "method": method,
            "path": path,
            "status_code": status_code,
            "response_time_ms": response_time,
        }

        if client_ip:
            log_data["client_ip"] = client_ip

        log_data.update(kwargs)

        if status_code >= 500:
            self.logger.error("HTTP request", extra=log_data)
        elif status_code >= 400:
            self.logger.warning("HTTP request", extra=log_data)
        else:
            self.logger.info("HTTP request", extra=log_data)

    def log_mutation(
        self,
        tenant_id: str,
        operation: str,
        success: bool,
        version: Optional[int] = None,
        error: Optional[str] = None,
        **kwargs
    ):
        """Log a hierarchy mutation attempt.

        Args:
            tenant_id: Tenant the mutation targets
            operation: Mutation name (e.g. move_role)
            success: Whether the mutation was committed
            version: Structural version after commit
            error: Error code if the mutation was rejected
            **kwargs: Additional fields to log
        """
        log_data = {
            "event": "hierarchy_mutation",
            "tenant_id": tenant_id,
            "operation": operation,
            "success": success,
        }

        if version is not None:
            log_data["version"] = version
        if error:
            log_data["error"] = error

        log_data.update(kwargs)

        if success:
            self.logger.info("Hierarchy mutation committed", extra=log_data)
        else:
            self.logger.warning("Hierarchy mutation rejected", extra=log_data)

    def log_delegation_event(
        self,
        tenant_id: str,
        delegation_id: str,
        action: str,
        **kwargs
    ):
        """Log a delegation lifecycle event.

        Args:
            tenant_id: Owning tenant
            delegation_id: Delegation identifier
            action: Lifecycle action (created, revoked, expired)
            **kwargs: Additional fields to log
        """
        log_data = {
            "event": "delegation",
            "tenant_id": tenant_id,
            "delegation_id": delegation_id,
            "action": action,
        }
        log_data.update(kwargs)
        self.logger.info("Delegation %s", action, extra=log_data)

    def log_conflict_resolution(
        self,
        tenant_id: str,
        conflict_id: str,
        resolution: str,
        **kwargs
    ):
        """Log a committed conflict resolution."""
        log_data = {
            "event": "conflict_resolution",
            "tenant_id": tenant_id,
            "conflict_id": conflict_id,
            "resolution": resolution,
        }
        log_data.update(kwargs)
        self.logger.info("Conflict resolved", extra=log_data)


# Global structured logger instance for the engine
engine_logger = StructuredLogger("rbac_hierarchy")
