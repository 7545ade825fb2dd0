"""
Measurement pair configuration.

Provides functionality to:
- Hold an immutable table of landmark pairs with descriptions
- Ship the default face-fit pair table
- Load pair tables from JSON files
"""

import json
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable, Tuple, Union

from .landmarks import MeasurementPair, pair_indices


# Default pairs for respirator fitting, indices into the sensor's face mesh
COMMON_PAIRS: Tuple[Tuple[int, int], ...] = (
    (458, 1045), (15, 1049), (4, 7), (294, 589), (1049, 4), (638, 394),
    # left strap
    (967, 464), (464, 456), (456, 451), (451, 455),
    # right strap
    (999, 1027), (1027, 884), (884, 883), (883, 879),
    # nose profile
    (4, 38), (38, 5), (5, 37), (37, 6), (6, 7),
    # right contour, chin to nose
    (1049, 983), (983, 982), (982, 1050), (1050, 1051), (1051, 1052),
    (1052, 1053), (1053, 509), (509, 893), (893, 894), (894, 881),
    (881, 880), (880, 879), (879, 600), (600, 756), (756, 862),
    (862, 753), (753, 594), (594, 582), (582, 609), (609, 802),
    (802, 798), (798, 14), (14, 818),
    # left contour, chin to nose
    (1049, 984), (984, 985), (985, 986), (986, 987), (987, 988),
    (988, 989), (989, 60), (60, 478), (478, 479), (479, 453),
    (452, 451), (451, 151), (151, 321), (321, 434), (434, 318),
    (318, 145), (145, 133), (133, 160), (160, 371), (367, 387),
    (387, 14),
)

PAIR_DESCRIPTIONS: Dict[str, str] = {
    "458-1045": "face width",
    "15-1049": "face length",
    "4-7": "nose protrusion",
    "294-589": "nose breadth",
    "1049-4": "lower face length",
    "638-394": "lip width",
    "967-464": "left strap 4",
    "464-456": "left strap 3",
    "456-451": "left strap 2",
    "451-455": "left strap 1",
    "999-1027": "right strap 4",
    "1027-884": "right strap 3",
    "884-883": "right strap 2",
    "883-879": "right strap 1",
    "4-38": "nose protrusion 1",
    "38-5": "nose protrusion 2",
    "5-37": "nose protrusion 3",
    "37-6": "nose protrusion 4",
    "6-7": "nose protrusion 5",
    "1049-983": "chin right 7",
    "983-982": "chin right 6",
    "982-1050": "chin right 5",
    "1050-1051": "chin right 4",
    "1051-1052": "chin right 3",
    "1052-1053": "chin right 2",
    "1053-509": "chin right 1",
    "509-893": "mid right cheek 5",
    "893-894": "mid right cheek 4",
    "894-881": "mid right cheek 3",
    "881-880": "mid right cheek 2",
    "880-879": "mid right cheek 1",
    "879-600": "top right cheek 7",
    "600-756": "top right cheek 6",
    "756-862": "top right cheek 5",
    "862-753": "top right cheek 4",
    "753-594": "top right cheek 3",
    "594-582": "top right cheek 2",
    "582-609": "top right cheek 1",
    "609-802": "nose right 4",
    "802-798": "nose right 3",
    "798-14": "nose right 2",
    "14-818": "nose right 1",
    "1049-984": "chin left 7",
    "984-985": "chin left 6",
    "985-986": "chin left 5",
    "986-987": "chin left 4",
    "987-988": "chin left 3",
    "988-989": "chin left 2",
    "989-60": "chin left 1",
    "60-478": "mid left cheek 5",
    "478-479": "mid left cheek 4",
    "479-453": "mid left cheek 3",
    "453-452": "mid left cheek 2",
    "452-451": "mid left cheek 1",
    "451-151": "top left cheek 7",
    "151-321": "top left cheek 6",
    "321-434": "top left cheek 5",
    "434-318": "top left cheek 4",
    "318-145": "top left cheek 3",
    "145-133": "top left cheek 2",
    "133-160": "top left cheek 1",
    "160-371": "nose left 4",
    "371-367": "nose left 3",
    "367-387": "nose left 2",
    "387-14": "nose left 1",
}


class PairConfiguration:
    """
    Immutable set of measurement pairs passed to the engine at construction.

    Usage:
        config = PairConfiguration.default()
        config.describe("4-7")        # "nose protrusion"
        config.keys                   # ["458-1045", "15-1049", ...]
    """

    def __init__(
        self,
        pairs: Iterable[Union[MeasurementPair, Tuple[int, int]]],
        descriptions: Optional[Dict[str, str]] = None
    ):
        """
        Args:
            pairs: MeasurementPair objects or (from, to) tuples
            descriptions: Optional pair-key -> description lookup used for
                pairs without their own description
        """
        lookup = dict(descriptions or {})
        resolved: List[MeasurementPair] = []
        for item in pairs:
            if isinstance(item, MeasurementPair):
                pair = item
            else:
                a, b = item
                pair = MeasurementPair(int(a), int(b))
            if pair.description is None and pair.key in lookup:
                pair = MeasurementPair(pair.from_index, pair.to_index, lookup[pair.key])
            resolved.append(pair)

        self._pairs: Tuple[MeasurementPair, ...] = tuple(resolved)
        self._descriptions: Dict[str, str] = {
            p.key: p.description for p in self._pairs if p.description is not None
        }
        self._indices = tuple(pair_indices(self._pairs))

    @classmethod
    def default(cls) -> "PairConfiguration":
        return cls(COMMON_PAIRS, PAIR_DESCRIPTIONS)

    @property
    def pairs(self) -> Tuple[MeasurementPair, ...]:
        return self._pairs

    @property
    def keys(self) -> List[str]:
        return [p.key for p in self._pairs]

    @property
    def indices(self) -> Tuple[int, ...]:
        """Distinct landmark indices used by the configured pairs."""
        return self._indices

    def describe(self, key: str) -> Optional[str]:
        return self._descriptions.get(key)

    def to_list(self) -> List[Dict[str, Any]]:
        """Pair table in export format; undescribed pairs get a generic label."""
        return [
            {
                "from": p.from_index,
                "to": p.to_index,
                "description": p.description or f"Landmark {p.from_index} to {p.to_index}",
                "key": p.key
            }
            for p in self._pairs
        ]

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self):
        return iter(self._pairs)


class PairConfigLoader:
    """
    Load pair tables from JSON files.

    Accepted formats:
        [{"from": 4, "to": 7, "description": "nose protrusion"}, ...]
        [[4, 7], [294, 589]]
        {"pairs": [...], "descriptions": {"4-7": "..."}}
    """

    @staticmethod
    def load(filepath: str) -> PairConfiguration:
        """
        Load a pair configuration.

        Args:
            filepath: Path to the JSON pair table

        Returns:
            PairConfiguration

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If an entry cannot be interpreted as a pair
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Pair table not found: {filepath}")

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        descriptions: Dict[str, str] = {}
        if isinstance(data, dict):
            descriptions = {str(k): str(v) for k, v in data.get("descriptions", {}).items()}
            entries = data.get("pairs", [])
        else:
            entries = data

        return PairConfiguration(
            [PairConfigLoader.parse_entry(e) for e in entries],
            descriptions
        )

    @staticmethod
    def parse_entry(entry: Any) -> MeasurementPair:
        if isinstance(entry, dict):
            try:
                return MeasurementPair(
                    int(entry["from"]),
                    int(entry["to"]),
                    entry.get("description")
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ValueError(f"Invalid pair entry: {entry!r}") from e
        if isinstance(entry, (list, tuple)) and len(entry) in (2, 3):
            description = entry[2] if len(entry) == 3 else None
            return MeasurementPair(int(entry[0]), int(entry[1]), description)
        raise ValueError(f"Invalid pair entry: {entry!r}")

    @staticmethod
    def save(config: PairConfiguration, filepath: str) -> None:
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(
                [{"from": p.from_index, "to": p.to_index, "description": p.description}
                 for p in config.pairs],
                f,
                indent=2
            )


def describe_key(config: PairConfiguration, key: str) -> str:
    """Description used for averaged values; falls back to ``"Landmark {key}"``."""
    return config.describe(key) or f"Landmark {key}"
