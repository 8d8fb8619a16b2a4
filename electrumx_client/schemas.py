from typing import Any, Optional, Union

from pydantic import BaseModel, field_validator


class JsonRpcRequest(BaseModel):
    """
    JSON-RPC 2.0 request as spoken by ElectrumX.

    Attributes:
        jsonrpc: Protocol version (always "2.0")
        id: Request identifier. The client uses increasing integers.
        method: Name of the remote method (e.g. "blockchain.block.header")
        params: Positional parameters. ElectrumX methods are always called
            with an ordered list, possibly empty.
    """

    jsonrpc: str = "2.0"
    id: Optional[Union[str, int]] = None
    method: str
    params: list[Any] = []

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: Union[str, int, None]) -> Union[str, int, None]:
        """Reject empty string ids and negative integer ids.

        Parameters
        ----------
        v : str | int | None
            The request ID value to validate

        Returns
        -------
        str | int | None
            The validated request ID

        Raises
        ------
        ValueError
            If the ID is an empty string or a negative integer
        """
        if isinstance(v, str) and len(v) == 0:
            raise ValueError("Request ID string cannot be empty")
        if isinstance(v, int) and v < 0:
            raise ValueError("Request ID integer must be non-negative")
        return v


class JsonRpcError(BaseModel):
    """
    JSON-RPC 2.0 error object.

    ElectrumX reports application errors (bad scripthash, unknown
    transaction, ...) with codes 1 and 2 and protocol errors with the
    standard negative codes.
    """

    code: int
    message: str
    data: Optional[Any] = None


class JsonRpcResponse(BaseModel):
    """
    JSON-RPC 2.0 response: either ``result`` or ``error`` is set.

    Examples
    --------
    >>> response = JsonRpcResponse(id=3, result="pong")
    >>> response.is_error
    False
    """

    jsonrpc: str = "2.0"
    id: Optional[Union[str, int]] = None
    result: Optional[Any] = None
    error: Optional[JsonRpcError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class JsonRpcNotification(BaseModel):
    """
    Unsolicited server push (a request without id).

    ``method`` is the subscription event name, e.g.
    ``blockchain.headers.subscribe``; ``params`` carries the payload.
    """

    jsonrpc: str = "2.0"
    method: str
    params: Optional[Any] = None


class BatchItemResult(BaseModel):
    """
    One entry of a batch call result.

    Attributes:
        param: The per-item parameter this entry was requested with
        result: The result, if the item succeeded
        error: The error object, if the item failed
    """

    param: Any = None
    result: Optional[Any] = None
    error: Optional[JsonRpcError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None
