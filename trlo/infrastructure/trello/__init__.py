"""Trello REST adapter implementing the BoardApiClient port."""
