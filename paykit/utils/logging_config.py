"""日志配置"""
import json
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import cast
from urllib.parse import parse_qsl


SENSITIVE_KEYS = {
    "sign",
    "signature",
    "paysign",
    "app_cert_sn",
    "alipay_cert_sn",
    "alipay_root_cert_sn",
    "ciphertext",
}


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 标记由 setup_logging 挂载的处理器，重复调用时只替换这些
_OWNED = "_paykit_owned"


def setup_logging(
    log_level: str = "INFO",
    log_dir: str | None = None,
    logger_name: str = "paykit",
) -> logging.Logger:
    """
    为 paykit 日志器挂载控制台/文件输出

    库内部从不调用，供应用入口（脚本、服务启动）按需使用。
    只配置 ``logger_name`` 对应的日志器，root logger 及其处理器保持不变。

    Args:
        log_level: 日志级别
        log_dir: 日志目录，为空时只输出到控制台
        logger_name: 要配置的日志器名称
    """
    target = logging.getLogger(logger_name)
    target.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for handler in [h for h in target.handlers if getattr(h, _OWNED, False)]:
        target.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        today = datetime.now().strftime("%Y-%m-%d")
        handlers.append(logging.FileHandler(log_path / f"{logger_name}_{today}.log", encoding="utf-8"))

        # 错误日志单独成文件
        error_handler = logging.FileHandler(log_path / f"{logger_name}_error_{today}.log", encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _OWNED, True)
        target.addHandler(handler)

    target.info("Logging configured: level=%s, dir=%s", log_level, log_dir)
    return target


def _mask_value(v: object) -> object:
    if v is None:
        return None
    if isinstance(v, (int, float, bool)):
        return v
    ss = str(v)
    if not ss:
        return ss
    if len(ss) <= 8:
        return "*" * len(ss)
    return f"{ss[:3]}***{ss[-3:]}"


def _mask_obj(obj: object) -> object:
    if isinstance(obj, dict):
        obj_dict = cast(dict[object, object], obj)
        out: dict[object, object] = {}
        for k, v in obj_dict.items():
            if str(k).strip().lower() in SENSITIVE_KEYS:
                out[k] = _mask_value(v)
            else:
                out[k] = _mask_obj(v)
        return out
    if isinstance(obj, list):
        return [_mask_obj(x) for x in cast(list[object], obj)]
    return obj


def mask_payload(raw: str | None) -> str | None:
    """回调报文脱敏后再写日志：支持 JSON 与表单两种格式"""
    if raw is None:
        return None
    s = str(raw)
    if not s.strip():
        return s

    try:
        obj = cast(object, json.loads(s))
        return json.dumps(_mask_obj(obj), ensure_ascii=False, separators=(",", ":"))
    except ValueError:
        pass

    pairs = parse_qsl(s, keep_blank_values=True) if "=" in s else []
    if pairs:
        return json.dumps(_mask_obj(dict(pairs)), ensure_ascii=False, separators=(",", ":"))
    return s


class GatewayLogger:
    """网关调用日志记录器"""

    def __init__(self, logger_name: str = "paykit.gateway"):
        self.logger = logging.getLogger(logger_name)

    def log_request(self, provider: str, method: str, path: str, attempt: int = 1) -> None:
        msg = f"REQUEST {provider} {method} {path}"
        if attempt > 1:
            msg += f" attempt={attempt}"
        self.logger.info(msg)

    def log_response(self, provider: str, method: str, path: str, status_code: int, duration_ms: float) -> None:
        msg = f"RESPONSE {provider} {method} {path} status={status_code} duration={duration_ms:.2f}ms"
        if status_code >= 500:
            self.logger.error(msg)
        elif status_code >= 400:
            self.logger.warning(msg)
        else:
            self.logger.info(msg)

    def log_error(self, provider: str, method: str, path: str, error: str) -> None:
        self.logger.error(f"ERROR {provider} {method} {path} error={error}")


# 单例实例
gateway_logger = GatewayLogger()
