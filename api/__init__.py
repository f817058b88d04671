"""HTTP API for Cipher Mafia."""
