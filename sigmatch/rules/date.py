# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import re
import datetime
from typing import Union
from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class SigmaDate:
    """
    the date a rule was written or modified, like `2019/10/23` or `2019-10-23`.

    components are validated, but not normalized against the calendar:
    `2020/02/31` is kept as written.
    """

    year: int
    month: int
    day: int

    @classmethod
    def parse(cls, s: Union[str, datetime.date]) -> "SigmaDate":
        """
        raises:
          ValueError: if the date is malformed.
        """
        if isinstance(s, datetime.date):
            # YAML loaders resolve `2019-10-23` to a date already.
            return cls(s.year, s.month, s.day)

        parts = re.split(r"[/-]", s)
        if len(parts) != 3:
            raise ValueError(f"parse sigma date {s}: unknown format")

        try:
            year, month, day = (int(part, 10) for part in parts)
        except ValueError as e:
            raise ValueError(f"parse sigma date {s}: invalid date component") from e

        if year < 100:
            raise ValueError(f"parse sigma date {s}: short years not allowed")
        if not 1 <= month <= 12:
            raise ValueError(f"parse sigma date {s}: invalid month {month}")
        if not 1 <= day <= 31:
            raise ValueError(f"parse sigma date {s}: invalid day {day}")

        return cls(year, month, day)

    def __str__(self):
        return f"{self.year:04d}/{self.month:02d}/{self.day:02d}"
