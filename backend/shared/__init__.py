"""Persistence shared by the shrine event services."""
