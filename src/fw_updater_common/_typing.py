# Copyright 2022 TIER IV, INC. All rights reserved.
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


from __future__ import annotations

import sys
from enum import Enum
from pathlib import Path
from typing import TypeVar, Union

T = TypeVar("T")
StrOrPath = Union[str, Path]

# Starting from 3.11, only subclass of ReprEnum preserves the type mixin's __format__,
#   so <custom_enum>(str, Enum) cannot be used directly as str in f-string anymore.
#   For >= 3.11 we use the built-in StrEnum, and for < 3.11 we manually define one.
if sys.version_info >= (3, 11):
    from enum import StrEnum

else:

    class StrEnum(str, Enum):

        def __str__(self) -> str:
            return str.__str__(self)
