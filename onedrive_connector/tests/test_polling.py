"""
Polling Events Tests
memory(delta token) 순환
"""

import pytest

from conftest import delta_page, file_json, folder_json
from onedrive_connector.onedrive_types import FolderInput, IncludeSubfoldersInput, PollingMemory
from onedrive_connector.polling import PollingEvents


class TestFilePolling:
    """파일 폴링"""

    @pytest.mark.asyncio
    async def test_first_poll_captures_baseline(self, graph_client, fake_graph):
        fake_graph.add("GET", "/me/drive/root/delta", delta_page([file_json("a")], delta_token="T0"))

        response = await PollingEvents(graph_client).on_files_created_or_updated(None)

        assert response.fly_bird is False
        assert response.result is None
        assert response.memory.to_dict() == {"deltaToken": "T0"}

    @pytest.mark.asyncio
    async def test_match_returns_files_and_new_memory(self, graph_client, fake_graph):
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page([
            file_json("a", parent_id="F1"), file_json("b", parent_id="F2"),
        ], delta_token="T1"))

        response = await PollingEvents(graph_client).on_files_created_or_updated(
            PollingMemory(delta_token="T0"),
            FolderInput(parentFolderId="F1"),
        )

        assert response.fly_bird is True
        assert [f["id"] for f in response.result["files"]] == ["a"]
        assert response.memory.delta_token == "T1"

    @pytest.mark.asyncio
    async def test_no_match_still_advances_memory(self, graph_client, fake_graph):
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page([], delta_token="T1"))

        response = await PollingEvents(graph_client).on_files_created_or_updated(PollingMemory("T0"))

        assert response.fly_bird is False
        assert response.memory.delta_token == "T1"

    @pytest.mark.asyncio
    async def test_include_subfolders(self, graph_client, fake_graph):
        fake_graph.add("GET", "/me/drive/items/docs", folder_json("docs", "Docs"))
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page([
            file_json("a", parent_id="q1", parent_path="/drive/root:/Docs/Q1"),
            file_json("b", parent_id="root-id", parent_path="/drive/root:"),
        ], delta_token="T1"))

        response = await PollingEvents(graph_client).on_files_created_or_updated(
            PollingMemory("T0"),
            FolderInput(parentFolderId="docs"),
            IncludeSubfoldersInput(includeSubfolders=True),
        )

        assert [f["id"] for f in response.result["files"]] == ["a"]

    @pytest.mark.asyncio
    async def test_empty_folder_id_means_no_filter(self, graph_client, fake_graph):
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page([
            file_json("a", parent_id="F1"), file_json("b", parent_id="F2"),
        ], delta_token="T1"))

        response = await PollingEvents(graph_client).on_files_created_or_updated(
            PollingMemory("T0"), FolderInput(parentFolderId="")
        )

        assert len(response.result["files"]) == 2


class TestFolderPolling:
    """폴더 폴링"""

    @pytest.mark.asyncio
    async def test_folders_under_parent(self, graph_client, fake_graph):
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page([
            folder_json("d1", "Docs", parent_id="R"),
            folder_json("d2", "Other", parent_id="X"),
        ], delta_token="T1"))

        response = await PollingEvents(graph_client).on_folders_created_or_updated(
            PollingMemory("T0"), FolderInput(parentFolderId="R")
        )

        assert response.fly_bird is True
        assert [f["id"] for f in response.result["folders"]] == ["d1"]
        assert response.result["folders"][0]["item_type"] == "folder"
        assert response.memory.delta_token == "T1"


class TestPollingMemory:
    """호스트 보관 상태 변환"""

    def test_from_dict(self):
        assert PollingMemory.from_dict({"deltaToken": "T0"}).delta_token == "T0"
        assert PollingMemory.from_dict({}) is None
        assert PollingMemory.from_dict(None) is None
