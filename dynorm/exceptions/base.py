from typing import Any, Dict, List, Optional


class DynormError(Exception):
    """Root of the dynorm exception hierarchy.

    ``context`` carries the structured details of a failure (entity, index, key
    values, store error code, validator errors). ``str()`` renders the scalar details
    inline after the message and lists validator errors one per line, so a failed
    save reads as::

        User failed validation
          - loginCount: 'many' is not of type 'integer'
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def validation_errors(self) -> List[Dict[str, Any]]:
        return list(self.context.get('validation_errors') or [])

    def __str__(self) -> str:
        details = {k: v for k, v in self.context.items() if k != 'validation_errors'}
        text = self.message
        if details:
            text += " [" + ", ".join(f"{k}={v!r}" for k, v in details.items()) + "]"
        if self.original_error is not None:
            text += f" (caused by {type(self.original_error).__name__})"
        for error in self.validation_errors:
            text += f"\n  - {error.get('path') or '<root>'}: {error.get('message')}"
        return text
