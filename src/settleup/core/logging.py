# src/settleup/core/logging.py
import logging
import json
import uuid
from datetime import datetime, timezone
from functools import wraps

from settleup.core.config import settings

class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging"""
    
    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }
        
        operation_id = getattr(record, 'operation_id', None)
        if operation_id:
            log_entry['operation_id'] = operation_id
        
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        
        return json.dumps(log_entry)

def setup_logging(use_sentry: bool = False):
    """Setup logging with optional Sentry integration"""
    
    # Configure Sentry if DSN is provided
    if use_sentry and settings.SENTRY_DSN:
        try:
            import sentry_sdk
            from sentry_sdk.integrations.logging import LoggingIntegration
            
            sentry_sdk.init(
                dsn=settings.SENTRY_DSN,
                integrations=[
                    LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
                ],
                traces_sample_rate=0.1,
                environment=settings.ENVIRONMENT
            )
        except ImportError:
            logging.warning("Sentry SDK not installed, skipping Sentry integration")
    
    handler = logging.StreamHandler()
    
    # Use simpler format for development
    if settings.ENVIRONMENT == 'development':
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
    else:
        formatter = StructuredFormatter()
    
    handler.setFormatter(formatter)
    
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    logger.addHandler(handler)
    
    return logger

def ledger_operation(logger):
    """Decorator for error handling around operations that write to a group ledger"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            operation_id = str(uuid.uuid4())
            
            logger.info(f"Starting ledger operation: {func.__name__}",
                        extra={'operation_id': operation_id})
            
            try:
                result = await func(*args, **kwargs)
                logger.info(f"Ledger operation completed: {func.__name__}",
                            extra={'operation_id': operation_id})
                return result
                
            except Exception as e:
                logger.error(f"Ledger operation failed: {func.__name__}: {str(e)}",
                             exc_info=True,
                             extra={'operation_id': operation_id})
                raise
        
        return wrapper
    return decorator
