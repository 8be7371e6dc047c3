import inspect
import json
import logging

logger = logging.getLogger(__name__)


class MessageChannel:
    """
    Routes JSON messages to handlers by their 'type' field.

    At most one handler is registered per message type: subscribing again
    replaces the previous handler instead of stacking a duplicate.
    """
    def __init__(self):
        self._handlers = {}

    def subscribe(self, msg_type, handler):
        if msg_type in self._handlers:
            logger.debug("[Channel] Replacing handler for '%s'", msg_type)
        self._handlers[msg_type] = handler

    def unsubscribe(self, msg_type):
        """Remove the handler for msg_type. Unknown types are ignored."""
        self._handlers.pop(msg_type, None)

    @staticmethod
    def decode(message):
        """
        Parse a raw message into a dict with a 'type' key.

        Raises:
            ValueError: not JSON, not an object, or no 'type'
        """
        data = json.loads(message) if isinstance(message, (str, bytes)) else message
        if not isinstance(data, dict) or 'type' not in data:
            raise ValueError("Message must be a JSON object with a 'type' field")
        return data

    @staticmethod
    def encode(msg_type, **payload):
        return json.dumps({'type': msg_type, **payload})

    async def dispatch(self, message, *args):
        """
        Decode `message` and call its handler with (data, *args).

        Returns:
            bool: True if a handler ran, False if the type had none.
        """
        data = self.decode(message)
        handler = self._handlers.get(data['type'])
        if handler is None:
            logger.debug("[Channel] No handler for '%s'", data['type'])
            return False
        result = handler(data, *args)
        if inspect.isawaitable(result):
            await result
        return True
