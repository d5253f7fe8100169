"""Shared configuration, errors, types, logging and time source."""
