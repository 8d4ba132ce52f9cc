from typing import Callable, Dict, Iterator, Sequence, TypeVar, Union, overload

S = TypeVar("S")
T = TypeVar("T")


class LazyList(Sequence[T]):
    """
    Read-only sequence that converts its items only when they are accessed.

    Holds the fetched rows and applies `transform` to a row the first time
    it is read. The list can be iterated any number of times; with
    `use_cache` each item is converted once.

    Args:
        source: Already fetched items (e.g. ORM rows).
        transform: Conversion applied to one item on access.
        use_cache: Keep converted items around.

    Example:
        countries = LazyList(rows, to_country)
        countries[0]      # converts only the first row
        list(countries)   # converts the rest
    """

    def __init__(
        self,
        source: Sequence[S],
        transform: Callable[[S], T],
        use_cache: bool = True,
    ):
        self._source = source
        self._transform = transform
        self._use_cache = use_cache
        self._cache: Dict[int, T] = {}

    @classmethod
    def empty(cls) -> "LazyList[T]":
        return cls([], lambda item: item)

    def __len__(self) -> int:
        return len(self._source)

    @overload
    def __getitem__(self, index: int) -> T: ...

    @overload
    def __getitem__(self, index: slice) -> "LazyList[T]": ...

    def __getitem__(self, index: Union[int, slice]) -> Union[T, "LazyList[T]"]:
        if isinstance(index, slice):
            return LazyList(
                [self[i] for i in range(*index.indices(len(self)))],
                lambda item: item,
            )

        if index < 0:
            index += len(self._source)
        if not 0 <= index < len(self._source):
            raise IndexError(f"LazyList index {index} out of range")

        if self._use_cache and index in self._cache:
            return self._cache[index]
        item = self._transform(self._source[index])
        if self._use_cache:
            self._cache[index] = item
        return item

    def __iter__(self) -> Iterator[T]:
        for index in range(len(self._source)):
            yield self[index]

    def __repr__(self) -> str:
        return f"LazyList(count={len(self)})"
