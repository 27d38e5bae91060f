"""Core: exceptions and input DTOs shared by services and the HTTP layer."""
