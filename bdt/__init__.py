# bdt — BiNDup E2E テスト支援ツール
# 要素検出・リトライ・メトリクス・性能計測を提供する

__version__ = "0.1.0"
