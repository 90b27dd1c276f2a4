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

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Status(str, Enum):
    STABLE = "stable"
    TEST = "test"
    EXPERIMENTAL = "experimental"
    DEPRECATED = "deprecated"
    UNSUPPORTED = "unsupported"


class Level(str, Enum):
    INFORMATIONAL = "informational"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RelationType(str, Enum):
    DERIVED = "derived"
    OBSOLETES = "obsoletes"
    MERGED = "merged"
    RENAMED = "renamed"
    SIMILAR = "similar"


class Relation(FrozenModel):
    id: str
    type: RelationType


class LogSource(FrozenModel):
    category: Optional[str] = None
    product: Optional[str] = None
    service: Optional[str] = None
    definition: Optional[str] = None

    # rule authors add their own keys, such as `custom_field`.
    model_config = ConfigDict(frozen=True, extra="allow")
