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

import sigmatch.render.result_document as rd
from sigmatch.capabilities import MatchResults


def render(meta: rd.Metadata, matches: MatchResults) -> str:
    return rd.ResultDocument.from_sigmatch(meta, matches).model_dump_json(exclude_none=True)
