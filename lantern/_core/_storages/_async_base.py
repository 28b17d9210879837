from __future__ import annotations

import abc
import json
import typing as tp

from lantern._core.models import Generation, Request, Response, StructuredRecord
from lantern._exceptions import DecodeFailure, StoreWriteFailure


class AsyncBaseResponseStore(abc.ABC):
    """
    Persistent request -> response snapshots, partitioned into named generations.
    """

    @abc.abstractmethod
    async def open_generation(self, name: str) -> Generation:
        """
        Return the generation called `name`, creating it if it does not exist yet.

        There is at most one generation per name, so opening an existing generation
        returns the stored one untouched.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def get(self, generation: Generation, request: Request) -> tp.Optional[Response]:
        """
        Look up the snapshot stored for the request identity (method and URL) in `generation`.

        Returns None when nothing is stored, or when the generation no longer exists.

        Raises:
            StoreReadFailure: the backend could not be read.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def put_many(self, generation: Generation, pairs: tp.Sequence[tp.Tuple[Request, Response]]) -> None:
        """
        Store several snapshots in a single transaction: either all of them are written or none.

        Existing snapshots with the same request identity are replaced. Response bodies
        are read if they have not been read yet.

        Raises:
            StoreWriteFailure: the generation does not exist or the backend rejected the write.
        """
        raise NotImplementedError()

    async def put(self, generation: Generation, request: Request, response: Response) -> None:
        await self.put_many(generation, [(request, response)])

    @abc.abstractmethod
    async def list_generations(self) -> tp.List[str]:
        raise NotImplementedError()

    @abc.abstractmethod
    async def delete_generation(self, name: str) -> None:
        """
        Remove the generation and every snapshot in it. Missing generations are ignored.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def active_generation(self) -> tp.Optional[Generation]:
        raise NotImplementedError()

    @abc.abstractmethod
    async def activate_generation(self, name: str) -> Generation:
        """
        Atomically make `name` the only active generation.

        Raises:
            StoreWriteFailure: the generation does not exist or the backend rejected the write.
        """
        raise NotImplementedError()

    async def close(self) -> None:
        pass


class AsyncBaseStructuredStore(abc.ABC):
    """
    Decoded documents (parsed JSON) keyed by URL, one record per URL.
    """

    @abc.abstractmethod
    async def get_record(self, url: str) -> tp.Optional[StructuredRecord]:
        raise NotImplementedError()

    @abc.abstractmethod
    async def put_record(self, record: StructuredRecord) -> StructuredRecord:
        """
        Insert or replace the record for `record.url`. Concurrent writers to the same URL
        resolve last-write-wins.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def delete(self, url: str) -> None:
        raise NotImplementedError()

    async def get(self, url: str) -> tp.Any:
        record = await self.get_record(url)
        if record is None:
            return None
        return self.load_document(record)

    async def put(self, url: str, document: tp.Any) -> StructuredRecord:
        return await self.put_record(StructuredRecord(url=url, payload=self.dump_document(document)))

    async def close(self) -> None:
        pass

    def load_document(self, record: StructuredRecord) -> tp.Any:
        try:
            return json.loads(record.payload)
        except ValueError as exc:
            raise DecodeFailure(f"Stored payload for {record.url!r} is not valid JSON") from exc

    def dump_document(self, document: tp.Any) -> str:
        try:
            return json.dumps(document, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StoreWriteFailure(f"Document of type {type(document).__name__} is not JSON serializable") from exc
