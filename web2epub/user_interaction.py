from dataclasses import replace
from typing import List, Set

from .chapter_list import ChapterList
from .models import ChapterDescriptor, StoryMetadata
from .utils import get_logger

logger = get_logger("UserInteraction")


def parse_id_list(text: str) -> Set[int]:
    """
    Parses '1, 3, 5-8' into a set of ints.
    Reversed ranges are accepted; anything else raises ValueError.
    """
    ids = set()
    for part in [p.strip() for p in text.split(",") if p.strip()]:
        if "-" in part:
            start_str, end_str = part.split("-", 1)
            start, end = int(start_str.strip()), int(end_str.strip())
            if start > end:
                start, end = end, start
            ids.update(range(start, end + 1))
        else:
            ids.add(int(part))
    return ids


def print_chapter_table(chapters: ChapterList):
    print("\n" + "=" * 60)
    print(f"FOUND {len(chapters)} CHAPTERS")
    print("=" * 60)
    print(f"{'ID':<5} | {'TITLE':<40} | {'URL':<50}")
    print("-" * 100)

    for chap in chapters:
        url = (chap.source_url[:45] + "...") if len(chap.source_url) > 45 else chap.source_url
        print(f"{chap.index + 1:<5} | {chap.title[:38]:<40} | {url:<50}")

    print("-" * 100)


def review_chapters(chapters: ChapterList) -> List[ChapterDescriptor]:
    """
    Shows the discovered chapters and asks which IDs to leave out.
    Returns the chapters still included.
    """
    print_chapter_table(chapters)
    print("\nReview the list above.")
    print("Enter the IDs of chapters to EXCLUDE.")
    print("Supports comma-separated numbers and ranges (e.g., '1, 2, 5-8').")
    print("Press ENTER to keep all.")

    user_input = input("> ").strip()

    if not user_input:
        logger.info("No chapters excluded.")
        return chapters.included()

    try:
        exclude_ids = parse_id_list(user_input)
        unknown = [i for i in exclude_ids if not 1 <= i <= len(chapters)]
        if unknown:
            raise ValueError(f"Unknown IDs: {sorted(unknown)}")
    except ValueError:
        logger.error("Invalid input. Please enter IDs or ranges (e.g. '1-5') from the list only.")
        return review_chapters(chapters)

    for chap in chapters:
        if chap.index + 1 in exclude_ids:
            chap.include = False

    logger.info(f"Excluded {len(exclude_ids)} chapters based on user input.")
    return chapters.included()


def edit_metadata(metadata: StoryMetadata) -> StoryMetadata:
    """Interactive prompt for title and author, defaulting to the extracted values."""
    print("\n" + "=" * 60)
    print("METADATA CONFIGURATION")
    print("=" * 60)

    title_input = input(f"Title [{metadata.title}]: ").strip()
    author_input = input(f"Author [{metadata.author}]: ").strip()
    print("-" * 60 + "\n")

    return replace(
        metadata,
        title=title_input or metadata.title,
        author=author_input or metadata.author,
    )


def print_summary(chapters: ChapterList):
    print("\n" + "=" * 60)
    print("CHAPTER STATUS")
    print("=" * 60)
    for chap in chapters.included():
        line = f"{chap.index + 1:<5} | {chap.status:<12} | {chap.title[:40]}"
        if chap.error:
            line += f"  ({chap.error})"
        print(line)
    print("-" * 60)
