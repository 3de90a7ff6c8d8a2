"""
集成测试（integration tests）

说明：
- 使用本地临时 HTTP server 模拟 NextDNS 的分页与流式接口，走真实的 HttpClient / SQLite。
- PostgreSQL 冒烟测试只有在设置 NLS_TEST_PG_DSN 时才运行。
"""
