"""tickerdesk backend."""
