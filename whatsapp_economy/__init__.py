"""whatsapp-economy-bot — WhatsApp group bot with a transactional economy game."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("whatsapp-economy-bot")
except PackageNotFoundError:
    __version__ = "0.0.0"
