# backend/tradeledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tradeledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tradeledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Concurrency retry policy for lock/version conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF_SECONDS = float(os.environ.get("DB_RETRY_BACKOFF_SECONDS", "0.1"))

    # Installments: 200 bps = 2% of the installment amount per (started) month late
    LATE_CHARGE_RATE_BPS = int(os.environ.get("LATE_CHARGE_RATE_BPS", "200"))
    REMINDER_DAYS_AHEAD = int(os.environ.get("REMINDER_DAYS_AHEAD", "7"))
    UPCOMING_WINDOW_DAYS = int(os.environ.get("UPCOMING_WINDOW_DAYS", "7"))

    # Temporary holds (non-invoice reservations) expire; invoice reservations never do
    TEMPORARY_HOLD_MINUTES = int(os.environ.get("TEMPORARY_HOLD_MINUTES", "30"))

    # Reconciliation sweep schedule
    RESERVATION_SWEEP_INTERVAL_SECONDS = int(os.environ.get("RESERVATION_SWEEP_INTERVAL_SECONDS", "900"))
    CONSISTENCY_CHECK_INTERVAL_SECONDS = int(os.environ.get("CONSISTENCY_CHECK_INTERVAL_SECONDS", "3600"))
    DAILY_REPORT_HOUR = int(os.environ.get("DAILY_REPORT_HOUR", "6"))
    LATE_CHARGE_BATCH_HOUR = int(os.environ.get("LATE_CHARGE_BATCH_HOUR", "1"))

    # Chart of accounts: posting role -> account code
    ACCOUNT_CODES = {
        "ACCOUNTS_RECEIVABLE": os.environ.get("ACCOUNT_CODE_AR", "1100"),
        "INVENTORY": os.environ.get("ACCOUNT_CODE_INVENTORY", "1200"),
        "ACCOUNTS_PAYABLE": os.environ.get("ACCOUNT_CODE_AP", "2000"),
        "SALES_REVENUE": os.environ.get("ACCOUNT_CODE_SALES", "4000"),
        "COGS": os.environ.get("ACCOUNT_CODE_COGS", "5000"),
        "EXPENSE": os.environ.get("ACCOUNT_CODE_EXPENSE", "6000"),
    }
