# forecast_errors.py


class ForecastError(Exception):
    """Base class for errors surfaced by the forecast package."""


class OverridePersistenceError(ForecastError):
    """An override could not be written to (or read from) its store."""

    def __init__(self, contract_id, message: str):
        self.contract_id = contract_id
        super().__init__(f"contract {contract_id}: {message}")
