"""Personal finance tracker: accounts, income/expense ledger and database backups behind a JSON API."""

__version__ = "1.0.0"
