"""
Telegram Bot module for the ledger bot.

ARCHITECTURE: Thin routing layer - NO business logic duplication!
- bot.py: webhook entry, update de-duplication, PTB Application
- handlers.py: Update -> IncomingMessage -> AccountingService
- telegram_api.py: outbound sendMessage and the admin lookup
- logging_config.py: the shared "ledger_bot" logger

Submodules are imported directly (ledger_bot.telegram_bot.bot, ...);
services import logging_config from here, so this package stays free of
eager imports.
"""
