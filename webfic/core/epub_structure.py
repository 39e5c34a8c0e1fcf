from dataclasses import dataclass


@dataclass(frozen=True)
class EpubStructure:
    """Folder layout inside the EPUB zip."""
    content_dir: str
    text_dir_rel: str
    images_dir_rel: str
    styles_dir_rel: str

    @property
    def text_dir(self) -> str:
        return f"{self.content_dir}/{self.text_dir_rel}"

    @property
    def images_dir(self) -> str:
        return f"{self.content_dir}/{self.images_dir_rel}"

    @property
    def relative_text_path(self) -> str:
        return f"../{self.text_dir_rel}/"

    @property
    def relative_image_path(self) -> str:
        return f"../{self.images_dir_rel}/"

    @property
    def relative_style_path(self) -> str:
        return f"../{self.styles_dir_rel}/"

    @property
    def stylesheet(self) -> str:
        return f"{self.styles_dir_rel}/stylesheet.css"

    @staticmethod
    def get(name: str = "EPUB") -> "EpubStructure":
        return OEBPS_STRUCTURE if (name or "").upper() == "OEBPS" else EPUB_STRUCTURE


OEBPS_STRUCTURE = EpubStructure(content_dir="OEBPS", text_dir_rel="Text", images_dir_rel="Images", styles_dir_rel="Styles")
EPUB_STRUCTURE = EpubStructure(content_dir="EPUB", text_dir_rel="text", images_dir_rel="images", styles_dir_rel="styles")
