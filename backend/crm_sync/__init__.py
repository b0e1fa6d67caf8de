"""Bitrix24 sync and scouter lead export backend."""
