"""附件上传协调。

对一次发送请求的文件集合：
1. 先整体校验（数量、大小、扩展名、同名重复），任何一项不通过都不会发起网络调用。
2. 会话中已存在同名文件时直接复用其 file_id。
3. 其余文件按有限并发上传；任一失败则整批失败，但已成功的文件仍写入会话，
   重试时不会重复上传。

返回列表的顺序始终与调用方请求的顺序一致。
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from agent_chat.domain.exceptions import BusinessError, UploadError, ValidationError
from agent_chat.domain.models import ConversationState, UploadCandidate, UploadedFile
from agent_chat.domain.session import SessionStore
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.providers.base import FileUploader


@dataclass(frozen=True)
class UploadPolicy:
    """附件校验规则；allowed_extensions 为 None 表示不限制类型。"""

    max_bytes: int = 10 * 1024 * 1024
    max_files: int = 10
    allowed_extensions: Optional[FrozenSet[str]] = None
    concurrency: int = 3

    @classmethod
    def from_settings(cls, settings) -> "UploadPolicy":
        return cls(
            max_bytes=settings.upload_max_bytes,
            max_files=settings.upload_max_files,
            allowed_extensions=frozenset(settings.upload_allowed_extensions) or None,
            concurrency=settings.upload_concurrency,
        )


def _format_size(size: int) -> str:
    kb = round(size / 1024)
    return f"{kb} KB" if kb < 1024 else f"{kb / 1024:.1f} MB"


class UploadCoordinator:
    def __init__(self, uploader: FileUploader, store: SessionStore, policy: Optional[UploadPolicy] = None):
        self._uploader = uploader
        self._store = store
        self._policy = policy or UploadPolicy()

    def validate(self, requested: Sequence[UploadCandidate]) -> None:
        """校验整批文件；不修改任何状态。"""
        policy = self._policy
        if len(requested) > policy.max_files:
            raise ValidationError(
                code="TOO_MANY_FILES",
                message=f"一次最多上传 {policy.max_files} 个文件",
                count=len(requested),
            )
        seen = set()
        for candidate in requested:
            name = candidate.file_name
            if name in seen:
                raise ValidationError(code="DUPLICATE_FILE_NAME", message=f"文件 {name} 重复", file_name=name)
            seen.add(name)
            if candidate.size > policy.max_bytes:
                raise ValidationError(
                    code="FILE_TOO_LARGE",
                    message=f"文件 {name} 大小 {_format_size(candidate.size)} 超过 {_format_size(policy.max_bytes)} 限制",
                    file_name=name,
                )
            if policy.allowed_extensions is not None and candidate.extension not in policy.allowed_extensions:
                raise ValidationError(
                    code="FILE_TYPE_NOT_ALLOWED",
                    message=f"不支持的文件类型: {name}",
                    file_name=name,
                )

    async def ensure_uploaded(
        self,
        requested: Sequence[UploadCandidate],
        state: ConversationState,
    ) -> List[UploadedFile]:
        self.validate(requested)
        resolved: List[Optional[UploadedFile]] = [state.find_file(c.file_name) for c in requested]
        missing = [(i, c) for i, c in enumerate(requested) if resolved[i] is None]
        log_ctx = {"agent_id": state.agent_id, "requested": len(requested), "missing": len(missing)}
        if not missing:
            if requested:
                logger.info("All files already uploaded", extra={"extra": log_ctx})
            return [f for f in resolved if f is not None]

        logger.info("Uploading files", extra={"extra": log_ctx})
        semaphore = asyncio.Semaphore(self._policy.concurrency)
        tasks: Dict[asyncio.Task, int] = {
            asyncio.create_task(self._upload_one(c, semaphore)): i for i, c in missing
        }
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await self._cancel_all(tasks)
            # 取消前已完成的上传同样落盘
            uploaded, _ = self._collect(tasks, tasks)
            self._store.append_files(state, [file for _, file in uploaded])
            logger.warning("File upload cancelled", extra={"extra": {**log_ctx, "uploaded": len(uploaded)}})
            raise
        await self._cancel_all(pending)

        uploaded, failures = self._collect(done, tasks)
        # 部分成功也要落盘，保证重试时不重复上传
        for idx, file in uploaded:
            resolved[idx] = file
        self._store.append_files(state, [file for _, file in uploaded])

        if failures:
            failures.sort(key=lambda item: item[0])
            logger.error(
                "File upload failed",
                extra={"extra": {**log_ctx, "uploaded": len(uploaded), "failed": len(failures)}},
            )
            raise failures[0][1]
        logger.info("Files uploaded", extra={"extra": {**log_ctx, "uploaded": len(uploaded)}})
        return [f for f in resolved if f is not None]

    async def _upload_one(self, candidate: UploadCandidate, semaphore: asyncio.Semaphore) -> UploadedFile:
        async with semaphore:
            try:
                file_id = await self._uploader.upload(
                    candidate.content, candidate.file_name, candidate.content_type
                )
            except UploadError:
                raise
            except BusinessError as e:
                raise UploadError(
                    code="UPLOAD_FAILED",
                    message=f"文件上传失败: {candidate.file_name}: {e.message}",
                    file_name=candidate.file_name,
                    cause_code=e.code,
                ) from e
            except Exception as e:
                raise UploadError(
                    code="UPLOAD_FAILED",
                    message=f"文件上传失败: {candidate.file_name}: {e}",
                    file_name=candidate.file_name,
                ) from e
        return UploadedFile(file_id=file_id, file_name=candidate.file_name)

    @staticmethod
    def _collect(finished, index: Dict[asyncio.Task, int]) -> Tuple[List[tuple], List[tuple]]:
        """按请求顺序拆分已结束任务的成功结果与异常。"""
        uploaded: List[tuple] = []
        failures: List[tuple] = []
        for task in finished:
            if not task.done() or task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                failures.append((index[task], exc))
            else:
                uploaded.append((index[task], task.result()))
        uploaded.sort(key=lambda item: item[0])
        return uploaded, failures

    @staticmethod
    async def _cancel_all(tasks) -> None:
        pending = [t for t in tasks if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
