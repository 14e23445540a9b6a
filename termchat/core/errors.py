# Copyright 2024 TermChat contributors
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

"""Error types raised across a conversational turn."""


class TermChatError(Exception):
    """Base class for TermChat errors."""


class TurnCancelled(TermChatError):
    """The operator cancelled the turn. Not a backend failure."""

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


class BackendError(TermChatError):
    """Transport or API level failure reported by a backend.

    ``detail`` is opaque diagnostic text suitable for a one-line display.
    """

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class UnknownTurnError(TermChatError):
    """Any failure during a turn that is neither a cancellation nor a backend error."""

    def __init__(self, message: str = "An unknown error occurred"):
        super().__init__(message)
