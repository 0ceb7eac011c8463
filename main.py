#!/usr/bin/env python3
"""
MySQL诊断采集器主程序入口

加载配置、建立连接池，执行一次或定时执行诊断采集，
把报告以JSON输出，并处理信号以优雅关闭。
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from mysql_diagnostics import __version__
from mysql_diagnostics.catalog import build_default_catalog
from mysql_diagnostics.models.diagnostics import ProbeCategory, Report, Severity
from mysql_diagnostics.processing.evaluator import ThresholdEvaluator
from mysql_diagnostics.services.collector import DiagnosticsCollector
from mysql_diagnostics.services.config_manager import ConfigManager
from mysql_diagnostics.services.connection_pool import ConnectionPool
from mysql_diagnostics.services.execution_engine import ExecutionEngine
from mysql_diagnostics.services.state_manager import CounterStateManager
from mysql_diagnostics.utils.exceptions import ConfigError, DiagnosticsError
from mysql_diagnostics.utils.log_manager import log_manager, get_logger

# 报告状态对应的进程退出码
EXIT_CODES = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.CRITICAL: 2,
}
EXIT_ERROR = 3


class DiagnosticsApp:
    """诊断采集主应用程序类"""

    def __init__(self, config_path: str, overrides: Optional[Dict[str, Any]] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            overrides: 命令行对 global 配置的覆盖
        """
        self.config_path = config_path
        self.overrides = overrides or {}
        self.global_config: Dict[str, Any] = {}
        self.logger: Optional[logging.Logger] = None

        self.config_manager: Optional[ConfigManager] = None
        self.pool: Optional[ConnectionPool] = None
        self.collector: Optional[DiagnosticsCollector] = None

    async def initialize(self):
        """初始化应用程序组件"""
        self.config_manager = ConfigManager(self.config_path)
        config = self.config_manager.load_config()

        global_config = dict(config.get('global') or {})
        global_config.update(self.overrides)
        self.global_config = global_config
        self._configure_logging(global_config)
        self.logger = get_logger('main')
        self.logger.info("开始初始化诊断采集器")

        catalog = build_default_catalog()

        max_workers = global_config.get('max_workers', 4)
        self.pool = ConnectionPool(self.config_manager.get_database_config(),
                                   max_size=max_workers)
        await self.pool.open()

        engine = ExecutionEngine(
            default_timeout=global_config.get('default_timeout', 10),
            probe_timeouts=self.config_manager.get_probe_timeouts(),
        )
        state_manager = CounterStateManager(self.config_manager.get_state_file())

        self.collector = DiagnosticsCollector(
            catalog=catalog,
            pool=self.pool,
            engine=engine,
            evaluator=ThresholdEvaluator(self.config_manager.get_threshold_rules()),
            state_manager=state_manager,
            max_workers=max_workers,
            connection_wait_timeout=global_config.get('connection_wait_timeout', 5),
            run_timeout=global_config.get('run_timeout'),
            categories=self.config_manager.get_categories(),
            disabled_probes=self.config_manager.get_disabled_probes(),
            target=self.pool.target,
        )
        self.logger.info("应用程序组件初始化完成")

    def _configure_logging(self, global_config: Dict[str, Any]):
        """配置日志系统"""
        log_config = {
            'log_level': global_config.get('log_level', 'INFO'),
            'enable_console': True,
            'enable_file': bool(global_config.get('log_file')),
        }

        if global_config.get('log_file'):
            log_config['log_file'] = global_config['log_file']
            log_config['max_file_size'] = global_config.get('max_file_size',
                                                            10 * 1024 * 1024)
            log_config['backup_count'] = global_config.get('backup_count', 5)

        log_manager.configure(log_config)

    async def run_once(self, categories: Optional[List[ProbeCategory]] = None) -> Report:
        """执行一次采集"""
        return await self.collector.collect(categories=categories or None)

    async def run_scheduled(self, interval: float, output: Optional[str] = None):
        """定时采集，每份报告写出一次"""
        async def emit(report: Report):
            write_report(report, output)

        self.collector.set_report_callback(emit)
        await self.collector.start(interval)

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        if self.collector:
            if self.collector.is_running:
                asyncio.ensure_future(self.collector.stop())
            else:
                self.collector.abort()

    async def stop(self):
        """停止应用程序并释放连接"""
        if self.collector:
            await self.collector.stop()
        if self.pool:
            await self.pool.close()
        if self.logger:
            self.logger.info("诊断采集器已停止")
        log_manager.cleanup()


def write_report(report: Report, output: Optional[str] = None):
    """把报告写为JSON，默认输出到标准输出"""
    content = json.dumps(report.to_dict(), ensure_ascii=False, indent=2)
    if output:
        with open(output, 'w', encoding='utf-8') as f:
            f.write(content + '\n')
    else:
        print(content)


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    categories = ', '.join(c.value for c in ProbeCategory)
    parser = argparse.ArgumentParser(
        prog='mysql-diagnostics',
        description='MySQL诊断采集器 - 运行只读诊断查询，按阈值评估并输出健康报告',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
示例用法:
  %(prog)s config.yaml                          # 执行一次采集并输出JSON报告
  %(prog)s --categories BufferPool config.yaml  # 只采集指定分类
  %(prog)s --interval 300 config.yaml           # 每5分钟采集一次
  %(prog)s --validate config.yaml               # 验证配置文件格式
  %(prog)s --list-probes                        # 列出内置探针

支持的探针分类:
  {categories}

退出码: 0=Info, 1=Warning, 2=Critical, 3=运行错误
        """
    )

    parser.add_argument(
        'config_file',
        nargs='?',
        help='YAML配置文件路径'
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--validate',
        action='store_true',
        help='验证配置文件格式并退出'
    )

    parser.add_argument(
        '--list-probes',
        action='store_true',
        help='列出内置探针并退出'
    )

    parser.add_argument(
        '--categories',
        nargs='+',
        metavar='CATEGORY',
        help='只采集这些分类（覆盖配置文件设置）'
    )

    parser.add_argument(
        '--interval',
        type=float,
        help='定时采集间隔（秒），默认取配置 global.interval，都未设置则只采集一次'
    )

    parser.add_argument(
        '--output', '-o',
        help='报告输出文件路径，默认输出到标准输出'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='设置日志级别（覆盖配置文件设置）'
    )

    parser.add_argument(
        '--log-file',
        help='日志文件路径（覆盖配置文件设置）'
    )

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Returns:
        验证是否成功
    """
    try:
        print(f"正在验证配置文件: {config_path}")
        config_manager = ConfigManager(config_path)
        config_manager.load_config()

        categories = config_manager.get_categories()
        rules = config_manager.get_threshold_rules()

        print("✅ 配置文件验证成功!")
        print(f"   - 目标: {ConnectionPool(config_manager.get_database_config()).target}")
        print(f"   - 采集分类: {', '.join(c.value for c in categories) or '全部'}")
        print(f"   - 阈值规则数量: {len(rules)}")
        for rule in rules:
            print(f"     * {rule.pattern}: {rule.to_dict()}")
        return True

    except DiagnosticsError as e:
        print(f"❌ 配置文件验证失败: {e}")
        return False


def list_probes():
    """打印内置探针清单"""
    catalog = build_default_catalog()
    print(f"内置探针 (版本 {catalog.version}, 共 {len(catalog)} 个):")
    for category in catalog.get_categories():
        print(f"  [{category.value}]")
        for probe in catalog.list(category):
            print(f"    - {probe.probe_id}: {probe.description}")


def parse_categories(names: Optional[List[str]]) -> List[ProbeCategory]:
    """解析命令行中的分类名

    Raises:
        ConfigError: 分类名无效
    """
    categories = []
    for name in names or []:
        try:
            categories.append(ProbeCategory.from_name(name))
        except ValueError as e:
            raise ConfigError(str(e))
    return categories


# 全局应用程序实例
app: Optional[DiagnosticsApp] = None


def signal_handler(signum, frame):
    """信号处理器"""
    signal_name = signal.Signals(signum).name
    print(f"\n收到信号 {signal_name} ({signum})", file=sys.stderr)

    if app:
        app.shutdown()
    else:
        sys.exit(0)


async def main() -> int:
    """主函数，返回进程退出码"""
    global app

    parser = create_argument_parser()
    args = parser.parse_args()

    if args.list_probes:
        list_probes()
        return 0

    if not args.config_file:
        parser.print_help()
        return EXIT_ERROR

    if args.validate:
        return 0 if validate_config_file(args.config_file) else EXIT_ERROR

    overrides = {}
    if args.log_level:
        overrides['log_level'] = args.log_level
    if args.log_file:
        overrides['log_file'] = args.log_file

    try:
        categories = parse_categories(args.categories)
        app = DiagnosticsApp(args.config_file, overrides)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await app.initialize()

        interval = args.interval or app.global_config.get('interval')
        if interval:
            if categories:
                app.collector.categories = categories
            await app.run_scheduled(interval, args.output)
            return 0

        report = await app.run_once(categories)
        write_report(report, args.output)
        return EXIT_CODES[report.status]

    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        return EXIT_ERROR
    except DiagnosticsError as e:
        print(f"诊断采集错误: {e.format_error()}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        if app:
            await app.stop()
            app = None


def cli():
    """控制台脚本入口"""
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
