"""ドメイン固有の例外クラス"""


class MindMirrorError(Exception):
    """MindMirror の基底例外"""

    pass


class ValidationError(MindMirrorError):
    """必須入力の欠落（userId / transcript 等）。HTTP 400 として返す"""

    pass


class AnalysisError(MindMirrorError):
    """解析レスポンスの抽出エラー（Gemini API等）"""

    pass


class IncompleteResponseError(AnalysisError):
    """レスポンスが途中で切れている（再試行で解決する可能性あり）"""

    pass


class MalformedResponseError(AnalysisError):
    """レスポンスが JSON として解釈できない（再試行しても解決しない）"""

    pass


class StoreUnavailableError(MindMirrorError):
    """ドキュメントストア（Firestore）の読み書きエラー"""

    pass


class ReflectionConflictError(MindMirrorError):
    """同じドキュメントIDのリフレクションが既に存在する"""

    pass
