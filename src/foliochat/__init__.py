"""foliochat: the conversation engine behind a portfolio site's AI chatbot."""

__version__ = "0.1.0"
